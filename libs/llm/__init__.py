__all__ = [
    "normalizer",
    "providers",
    "registry",
    "credentials",
    "client_factory",
    "chunking",
    "retry",
    "continuation",
]
