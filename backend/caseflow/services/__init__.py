"""CaseFlow - Services"""
