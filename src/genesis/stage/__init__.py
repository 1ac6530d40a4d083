"""Stage flow: ranking, elimination policy and the progression controller."""
