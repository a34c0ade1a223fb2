"""FoodSwap - Peer-to-peer food sharing backend."""
