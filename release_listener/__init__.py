"""Release listener.

A small webhook service that listens for upstream GitHub releases and
republishes them: run the update script, then commit, tag and push the
regenerated package for every newly published version.
"""

__version__ = "0.1.0"
