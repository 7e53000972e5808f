"""Shared configuration and logging for the workflow code generator"""
