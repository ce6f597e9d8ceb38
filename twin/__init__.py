"""Twin - Autonomous build loop for a coding agent.

Drives an external coding agent through a persistent story ledger
(prd.json): plan a batch of stories, build them one at a time, absorb
steering between builds, and optionally keep planning until a quota or
deadline is reached.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
