"""Entry point for ``streamlit run app.py``."""

import runpy

runpy.run_module("yrweather.app", run_name="__main__")
