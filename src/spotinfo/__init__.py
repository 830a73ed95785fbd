"""spotinfo: AWS EC2 Spot savings, interruption bands, prices and placement scores."""

__version__ = "0.1.0"
