"""Offline-first desktop client for the B-Perks platform."""
