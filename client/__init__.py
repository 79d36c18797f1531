from .scraping import MidasClient, ScrapingResponse

__all__ = ["MidasClient", "ScrapingResponse"]
