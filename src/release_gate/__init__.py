"""ArmorCode release gate.

Polls the build validation endpoint until a verdict is reached and turns
that verdict into a pass, fail or degraded outcome for the pipeline.
"""

__version__ = "1.0.0"
