"""repokit - one repository contract over Git and Mercurial."""

__version__ = "0.1.0"
