import pathlib
import sys

BACKEND_ROOT = pathlib.Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(BACKEND_ROOT))

project = 'Map Feature Editor API'
copyright = '2025, Mihovil Rak'
author = 'Mihovil Rak'
release = '0.1.0'

root_doc = 'index'
templates_path = ['_templates']
exclude_patterns = [
    '.venv',
    'venv',
    '.pytest_cache',
    '.ruff_cache',
    '.mypy_cache',
    'generated/*.tests.*',
]

extensions = [
    'sphinx.ext.autodoc',
    'sphinx.ext.napoleon',
    'sphinx.ext.autosummary',
    'sphinx.ext.intersphinx',
    'sphinx.ext.viewcode',
    'sphinx_autodoc_typehints',
    'myst_parser',
]

autosummary_generate = True
autosummary_imported_members = False

# Google style only; examples in the app package use ``Example:`` sections.
napoleon_google_docstring = True
napoleon_numpy_docstring = False
napoleon_include_init_with_doc = True
napoleon_use_param = True
napoleon_use_ivar = False

autodoc_default_options = {
    'members': True,
    'undoc-members': False,
    'show-inheritance': True,
}
autodoc_member_order = 'bysource'
typehints_fully_qualified = False

# Importing app.db needs a PostGIS driver; documentation builds do not.
autodoc_mock_imports = [
    'psycopg2',
    'psycopg2.extensions',
    'psycopg2.extras',
]

intersphinx_mapping = {
    'python': ('https://docs.python.org/3', None),
    'httpx': ('https://www.python-httpx.org', None),
    'pyproj': ('https://pyproj4.github.io/pyproj/stable', None),
    'shapely': ('https://shapely.readthedocs.io/en/stable', None),
}

source_suffix = {
    '.rst': 'restructuredtext',
    '.md': 'markdown',
}
myst_enable_extensions = ['colon_fence']

html_theme = 'sphinx_rtd_theme'
html_static_path = ['_static']
html_title = 'Map Feature Editor API'
html_theme_options = {
    'prev_next_buttons_location': 'bottom',
    'collapse_navigation': False,
}
