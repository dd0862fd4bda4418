"""SnapHealth meal analysis API."""
