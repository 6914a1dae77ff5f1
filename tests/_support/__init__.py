"""Shared test helpers: recording collaborator fakes and builders."""
