"""HTTP routers for the control plane."""
