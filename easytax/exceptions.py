class EasyTaxError(Exception):
    """Base error for the tax calculation stack."""


class EasyTaxDaoError(EasyTaxError):
    """Raised when the tax code or taxation store cannot be read or written."""


class CatalogLookupError(EasyTaxError):
    """Raised when a catalog cannot map a plan to a product."""
