"""Domain services: inventory, orders, remittances and their collaborators."""
