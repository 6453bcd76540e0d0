"""Internal developer platform control plane."""
