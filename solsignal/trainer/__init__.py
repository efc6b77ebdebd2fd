"""Overlay datasets and retrain gates."""
