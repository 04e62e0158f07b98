"""
DoomerFlow - slowed + reverb mix generator.

Renders many variants of one input track through a fixed
speed -> low-pass -> reverb -> vinyl-noise chain.
"""

__version__ = "1.2.0"
