"""
Test suite for the Clinic Booking Service.

Contains unit tests for the booking services and integration tests for the HTTP API.
"""
