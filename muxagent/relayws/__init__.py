"""Relay messages, encrypted sessions, event history, file browsing, status tracking, RPC handling and the relay client."""