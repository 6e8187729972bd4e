"""Receding-horizon MPC path follower."""
