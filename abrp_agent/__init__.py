"""ABRP Agent -- vehicle telemetry forwarder for A Better Routeplanner.

Reads battery, position and charging metrics from the vehicle's metrics
registry, normalises them into an ABRP telemetry record and sends the
record to the ABRP telemetry API whenever the send policy says the
planner needs fresh data.
"""

__version__ = "2.0.0"
