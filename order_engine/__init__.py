"""Order & Booking Conflict Engine."""
