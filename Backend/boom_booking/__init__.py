"""
Boom Booking - multi-tenant karaoke room booking backend.
"""
