"""
FLIR pan-tilt unit driver.

A Python driver for FLIR (Directed Perception) pan-tilt units speaking the
terse ASCII command protocol over serial or TCP, with an HTTP control surface.
"""

__version__ = "0.1.0"
