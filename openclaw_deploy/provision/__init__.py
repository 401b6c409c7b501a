"""
VM provisioning: gcloud infrastructure, Ansible inventories, SSH access and
the create/update workflows.
"""
