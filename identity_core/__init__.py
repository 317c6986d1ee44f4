"""Authorization core of the LoRaWAN Identity Server."""
