"""depwatch: turn package-publish hooks into build job mutations."""

__version__ = "0.1.0"
