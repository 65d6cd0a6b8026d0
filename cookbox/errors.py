class CookboxError(Exception):
    pass


class StoreUnavailable(CookboxError):
    """Transient network or service failure."""


class StoreAuthError(CookboxError):
    """Credentials or permissions were refused. Retrying will not help."""


class ValidationRejected(CookboxError):
    pass


class CategoryNotEmpty(ValidationRejected):
    def __init__(self, category_id: str, recipe_count: int) -> None:
        super().__init__(
            f"Category {category_id} still holds {recipe_count} recipe(s)."
        )
        self.category_id = category_id
        self.recipe_count = recipe_count


class NotFound(CookboxError):
    pass


class PackageError(CookboxError):
    pass


class MalformedPackage(PackageError):
    pass


class UnsupportedVersion(PackageError):
    def __init__(self, version: object) -> None:
        super().__init__(f"Unsupported package version: {version!r}")
        self.version = version


class CategoryCreateFailed(CookboxError):
    def __init__(self, name: str, cause: CookboxError) -> None:
        super().__init__(f"Could not create category {name!r}: {cause}")
        self.name = name
        self.cause = cause
