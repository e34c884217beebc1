"""
External service clients for the autopost service.

- WordPressClient: WordPress REST API (``wp-json/wp/v2``) for creating,
  updating, fetching and deleting published content.
"""

from autopost.tools.wordpress_client import WordPressClient

__all__ = [
    "WordPressClient",
]
