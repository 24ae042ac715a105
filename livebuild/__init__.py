"""
livebuild - Build, run and restart projects when their files change.

Supervises any number of build groups, each polling its watched files,
rebuilding and restarting its artifact on change, with an optional reverse
proxy and static file server in front of the supervised processes.
"""

__version__ = "0.1.0"
