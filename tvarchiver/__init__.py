"""Czech TV episode scraper and Jellyfin downloader."""
__version__ = "0.1.0"
