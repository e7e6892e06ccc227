"""
dsc-publish: package and publish PowerShell DSC configurations.

Bundles a Desired State Configuration script with the PowerShell modules it
imports into a ZIP archive, and optionally uploads that archive to an Azure
Blob Storage container for use by the DSC VM extension.

Main features:
- Import-DscResource discovery without a PowerShell host
- Module lookup through pwsh or directly over PSModulePath
- Local archive creation or blob upload with overwrite protection
- What-if and confirmation support for every side effect
- Guaranteed cleanup of temporary staging files
"""
