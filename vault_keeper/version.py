"""Vault Keeper Meta information.
   Vault Keeper stores user passwords, bank cards, texts and files
   behind a typed remote-procedure interface.
"""
__title__ = 'vault_keeper'
__description__ = (
   'Vault Keeper stores user-scoped passwords, bank cards, texts and '
   'binary files behind a typed remote-procedure interface.'
)
__version__ = '0.1.0'
__license__ = 'Apache-2.0'
