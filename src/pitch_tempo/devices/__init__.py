"""Collaborator adapters: audio files and live capture. Optional dependencies."""
