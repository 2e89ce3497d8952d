# Configuration file for the Sphinx documentation builder.
#
# For the full list of built-in configuration values, see the documentation:
# https://www.sphinx-doc.org/en/master/usage/configuration.html

import os
import sys

# Add source path for autodoc
sys.path.insert(0, os.path.abspath('../src'))

from mavbus import __version__  # noqa: E402

# -- Project information -----------------------------------------------------
project = 'mavbus'
copyright = '2026, mavbus developers'
author = 'mavbus developers'
version = __version__
release = __version__

# -- General configuration ---------------------------------------------------
extensions = [
    'myst_parser',              # Markdown support
    'sphinx.ext.autodoc',       # Auto-generate docs from docstrings
    'sphinx.ext.napoleon',      # Google style docstrings
    'sphinx.ext.viewcode',      # Add links to source code
    'sphinx.ext.intersphinx',   # Link to other docs
]

templates_path = ['_templates']

exclude_patterns = ['_build', 'Thumbs.db', '.DS_Store']

source_suffix = {
    '.rst': 'restructuredtext',
    '.md': 'markdown',
}

master_doc = 'index'

# -- MyST Parser configuration -----------------------------------------------
myst_enable_extensions = [
    'colon_fence',      # ::: fence directive support
    'deflist',          # Definition lists
]

myst_heading_anchors = 3

# -- Options for HTML output -------------------------------------------------
html_theme = 'sphinx_rtd_theme'
html_static_path = ['_static']

if not os.path.exists('_static'):
    os.makedirs('_static')

html_theme_options = {
    'navigation_depth': 3,
    'collapse_navigation': False,
}

# -- Options for autodoc -----------------------------------------------------
autodoc_default_options = {
    'members': True,
    'show-inheritance': True,
}

autodoc_member_order = 'bysource'

# -- Options for intersphinx -------------------------------------------------
intersphinx_mapping = {
    'python': ('https://docs.python.org/3', None),
    'pyserial': ('https://pyserial.readthedocs.io/en/latest/', None),
}
