"""
VIBE — Safety-gated agentic command runner.

Plan it. Approve it. Run it. Undo it.
"""

__version__ = "0.4.0"
__codename__ = "VIBE"
__tagline__ = "Plan it. Approve it. Run it. Undo it."

BANNER = r"""
 __     __ ___  ____   _____
 \ \   / /|_ _|| __ ) | ____|
  \ \ / /  | | |  _ \ |  _|
   \ V /   | | | |_) || |___
    \_/   |___||____/ |_____|
"""
