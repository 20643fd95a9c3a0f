"""CollegeCrush candidate ranking and reliable chat delivery core."""

__version__ = "0.1.0"
