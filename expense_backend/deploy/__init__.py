"""Provision Azure resources for the expense API and deploy the application."""
