"""Textual terminal front-end for the Saathi chat client."""
