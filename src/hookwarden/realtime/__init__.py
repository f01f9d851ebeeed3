"""Real-time infrastructure — Redis pub/sub.

Learn: Reconciliation outcomes are durable in the events table. Redis is
only a broadcast channel on top, for dashboards or other services that
want to react as soon as an org's hook is (re)created.
"""
