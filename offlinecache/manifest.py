"""Asset manifest and cache generation naming.

The manifest is the fixed list of resources that must be present in the
cache after installation. It is produced by the site build and assumed to
match the deployed paths.
"""

DEFAULT_CACHE_NAME = "afz-advocacy"
DEFAULT_CACHE_VERSION = "1.0.6"

# Document served when a page request cannot be satisfied offline
DEFAULT_OFFLINE_URL = "/pages/offline.html"

DEFAULT_ASSET_MANIFEST: tuple[str, ...] = (
    "/",
    "/index.html",
    "/pages/about.html",
    "/pages/contact.html",
    "/pages/donate.html",
    "/pages/auth.html",
    "/pages/offline.html",
    "/css/afz-unified-design.css",
    "/js/main.js",
    "/js/language.js",
    "/js/navigation.js",
    "/js/pwa.js",
    "/js/donate.js",
    "/js/auth.js",
    "/translations/en.json",
    "/translations/fr.json",
    "/translations/es.json",
    "/translations/pt.json",
    "/translations/ny.json",
    "/translations/be.json",
    "/translations/to.json",
    "/translations/lo.json",
    "/translations/sn.json",
    "/translations/nd.json",
    # Only the images every page needs
    "/images/logo.png",
    "/images/hero-bg.jpg",
    "/images/about-hero.jpg",
    "/manifest.json",
    # Third-party stylesheets
    "https://cdn.jsdelivr.net/npm/tailwindcss@2.2.19/dist/tailwind.min.css",
    "https://cdnjs.cloudflare.com/ajax/libs/font-awesome/6.0.0/css/all.min.css",
)


def generation_id(name: str, version: str) -> str:
    """Build the cache generation identifier, e.g. ``afz-advocacy-v1.0.6``.

    Changing the version yields a new generation; the previous one is
    discarded wholesale on the next activation.
    """
    return f"{name}-v{version}"


DEFAULT_GENERATION = generation_id(DEFAULT_CACHE_NAME, DEFAULT_CACHE_VERSION)
