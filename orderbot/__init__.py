"""
                Doka Burger Order Bot

Order-taking backend for a food delivery shop: receives orders from the
web form, stores customers and orders, and keeps the customer posted over
WhatsApp with a receipt and delayed status messages.
"""

__version__ = "1.0.0"
