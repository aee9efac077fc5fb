"""Frame integration and grouping, EER decoding, CTF modelling and input-folder queuing for cryo-EM movies."""

__version__ = "0.1.0"