"""
Services of the order engine.

- domain/: cart, scheduling and order lifecycle rules
- jobs/: background work (abandoned-cart reaper)
- chat/: tool-calling conversation orchestrator
- notifications: business alerts over Redis pub/sub
"""
