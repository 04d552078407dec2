"""Real-time chat core: presence, rooms, typing, routing and receipts."""
