"""converge -- staged convergence controller for declared service topologies."""

__version__ = "0.4.0"
