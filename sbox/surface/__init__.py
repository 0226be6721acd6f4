"""Observed render surface abstraction and its BeautifulSoup binding."""
