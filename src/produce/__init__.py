"""Producer side: transducers, the bounded channel, and the sensor."""
