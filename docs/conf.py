import os
import sys

# Build the docs against the working tree
sys.path.insert(0, os.path.abspath(".."))

project   = "pseudopop"
copyright = "2026, pseudopop developers"
author    = "pseudopop developers"
release   = "0.1.0"

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",
    "sphinx.ext.mathjax",        # weight formulas in docstrings
    "sphinx_autodoc_typehints",
    "sphinx_copybutton",
]

html_theme = "sphinx_rtd_theme"

autodoc_member_order    = "bysource"
autodoc_typehints       = "description"
always_document_param_types = True

# NumPy-style Parameters / Raises sections
napoleon_numpy_docstring = True
napoleon_use_param  = True
napoleon_use_rtype  = False
