"""
hotelops - hotel booking lifecycle and billing engine
Reservation -> room assignment -> Stay -> Invoice -> Payment
"""
__version__ = "0.1.0"
